from typing import Any, Dict, Tuple

from sellhub_backend import execute, fetch_session
from vercel_handler import SellhubRequestHandler


class handler(SellhubRequestHandler):
    allowed_method = "GET"

    def respond(self) -> Tuple[int, Dict[str, Any]]:
        return execute(
            "get-session", fetch_session, self.settings(), self.query_param("sessionId")
        )
