from walletlink.routers import events, linking

__all__ = [
    'events',
    'linking',
]
