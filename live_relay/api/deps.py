from fastapi import Request, WebSocket

from live_relay.services.relay_hub import RelayHub


def get_relay_hub(request: Request) -> RelayHub:
    return request.app.state.relay_hub


def get_ws_relay_hub(websocket: WebSocket) -> RelayHub:
    return websocket.app.state.relay_hub
