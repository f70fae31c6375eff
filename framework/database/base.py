from abc import ABC, abstractmethod

class BaseDatabaseDriver(ABC):
    @abstractmethod
    async def connect(self):
        pass

    @abstractmethod
    async def disconnect(self):
        pass

    @abstractmethod
    async def create_all(self):
        """Create the mapped schema."""
        pass

    @abstractmethod
    def get_session(self):
        """Async generator yielding one session per unit of work."""
        pass
