from starlette.requests import HTTPConnection

from ..changefeed import ChangeFeed
from ..dashboard import AssignmentFetcher, WatcherRegistry


# HTTPConnection so the same dependencies serve HTTP and WebSocket routes
def get_change_feed(conn: HTTPConnection) -> ChangeFeed:
    return conn.app.state.change_feed


def get_fetcher(conn: HTTPConnection) -> AssignmentFetcher:
    return conn.app.state.fetcher


def get_watchers(conn: HTTPConnection) -> WatcherRegistry:
    return conn.app.state.watchers
