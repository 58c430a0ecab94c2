from typing import Any, Dict, Tuple

from sellhub_backend import create_checkout, execute
from vercel_handler import SellhubRequestHandler


class handler(SellhubRequestHandler):
    allowed_method = "POST"

    def respond(self) -> Tuple[int, Dict[str, Any]]:
        return execute(
            "create-checkout",
            create_checkout,
            self.settings(),
            self.read_json_body(),
            origin=self.headers.get("Origin"),
        )
