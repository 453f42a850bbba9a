"""Herd — one upstream connection for a herd of browser tabs.

Keeps a small shared todo list in sync across independent tabs of the
same user.  Tabs elect a single leader over a local broadcast bus; only
the leader holds the server subscription and relays each authoritative
snapshot to the followers.  Edits are applied optimistically and rolled
back exactly if the server rejects them.

Quick start::

    import herd

    herd.serve(".")                       # HTTP + SSE server

    async with herd.Tab(bus, services.channel, submit) as tab:
        tab.create("Buy milk")

Pieces:

    herd.server     Store, cached projection, mutation pipeline, broadcast
    herd.tabs       Bus, leader election, upstream client, reconciler
    herd.app        Chirp routes and the ``todos`` SSE stream

"""

__version__ = "0.1.0"
__all__ = [
    "HerdConfig",
    "LocalBus",
    "Tab",
    "__version__",
    "build_services",
    "load_config",
    "serve",
    "simulate",
]


def __getattr__(name: str) -> object:
    """Lazy imports for the public API.

    Keeps ``import herd`` fast and free of the web stack until it is used.
    """
    if name == "HerdConfig":
        from herd.config import HerdConfig

        return HerdConfig

    if name == "load_config":
        from herd.config_loader import load_config

        return load_config

    if name == "build_services":
        from herd.server.services import build_services

        return build_services

    if name == "LocalBus":
        from herd.tabs.bus import LocalBus

        return LocalBus

    if name == "Tab":
        from herd.tabs.tab import Tab

        return Tab

    if name == "serve":
        from herd.app import serve

        return serve

    if name == "simulate":
        from herd.simulate import simulate

        return simulate

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
