from typing import Any, Dict, Tuple

from sellhub_backend import execute, fetch_invoice
from vercel_handler import SellhubRequestHandler


class handler(SellhubRequestHandler):
    allowed_method = "GET"

    def respond(self) -> Tuple[int, Dict[str, Any]]:
        return execute(
            "get-invoice",
            fetch_invoice,
            self.settings(),
            self.query_param("createdAtMs"),
            email=self.query_param("email"),
        )
