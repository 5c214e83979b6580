"""Rendezvous and UDP hole punch client.

Módulos do cliente:
- ``config`` carrega parâmetros do ambiente (e de um JSON opcional).
- ``codec`` serializa/decodifica registro, probes e frames do canal.
- ``peer_table`` guarda os endpoints anunciados pelo coordenador.
- ``signaling`` encapsula o canal websocket (connect com retry, join, heartbeat).
- ``udp_socket`` contém o socket único de registro, punch e detecção de probes.
- ``session`` e ``state`` modelam a máquina de estados da sessão.
- ``keep_alive`` define os timers periódicos consultados pelo loop.
- ``event_loop`` multiplexa timers e as duas fontes de I/O até o fim da sessão.
- ``p2p_client`` orquestra startup, execução e shutdown limpo.
"""
