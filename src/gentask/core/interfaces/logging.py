from abc import ABC, abstractmethod


class LoggingPort(ABC):
    """What the core needs from a logger.

    Messages are pre-formatted ``[area:event] key=value`` strings; adapters
    wrapping the standard library may also pass ``%``-style ``args``.
    """

    @abstractmethod
    def info(self, msg: str, *args): ...

    @abstractmethod
    def warning(self, msg: str, *args): ...

    @abstractmethod
    def error(self, msg: str, *args): ...

    @abstractmethod
    def debug(self, msg: str, *args): ...
