from fastapi.requests import HTTPConnection

from rhombus.services.workbench import Workbench


def get_workbench(connection: HTTPConnection) -> Workbench:
    """The Workbench created by the app lifespan (works for HTTP and websocket routes)"""
    return connection.app.state.workbench
