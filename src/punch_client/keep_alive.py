"""Named periodic timers driven by the event loop (keepalives, heartbeat, punch)."""
from __future__ import annotations

from typing import Callable, List, Optional


class IntervalTimer:
    """Timer periódico sem thread própria; o loop consulta ``due``/``fire``.

    ``active`` é um predicado opcional: enquanto for falso o timer não dispara.
    Quando volta a ficar ativo, o primeiro disparo é imediato se
    ``fire_on_activate`` for verdadeiro.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        action: Callable[[], None],
        active: Optional[Callable[[], bool]] = None,
        fire_on_activate: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"intervalo do timer {name} deve ser positivo: {interval}")
        self.name = name
        self.interval = interval
        self.action = action
        self._active = active
        self.fire_on_activate = fire_on_activate
        self.next_due: Optional[float] = None
        self.fired = 0

    def is_active(self) -> bool:
        return self._active is None or self._active()

    def arm(self, now: float) -> None:
        self.next_due = now if self.fire_on_activate else now + self.interval

    def due_at(self, now: float) -> Optional[float]:
        """Próximo disparo, ou ``None`` se inativo. Arma o timer se necessário."""
        if not self.is_active():
            self.next_due = None
            return None
        if self.next_due is None:
            self.arm(now)
        return self.next_due

    def maybe_fire(self, now: float) -> bool:
        due = self.due_at(now)
        if due is None or now < due:
            return False
        self.fired += 1
        # Sem rajadas de recuperação quando o loop atrasa.
        next_due = due + self.interval
        self.next_due = next_due if next_due > now else now + self.interval
        self.action()
        return True


class TimerSet:
    """Conjunto fixo de timers nomeados."""

    def __init__(self, timers: List[IntervalTimer]) -> None:
        self.timers = list(timers)

    def __getitem__(self, name: str) -> IntervalTimer:
        for timer in self.timers:
            if timer.name == name:
                return timer
        raise KeyError(name)

    def fire_due(self, now: float, should_stop: Callable[[], bool] = lambda: False) -> List[str]:
        fired = []
        for timer in self.timers:
            if should_stop():
                break
            if timer.maybe_fire(now):
                fired.append(timer.name)
        return fired

    def next_due(self, now: float) -> Optional[float]:
        dues = [due for due in (timer.due_at(now) for timer in self.timers) if due is not None]
        return min(dues) if dues else None
