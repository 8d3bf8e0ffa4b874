from .manager import RoomManager

__all__ = ['RoomManager']
