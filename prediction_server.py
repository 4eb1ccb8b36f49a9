import json
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple, Union

from aiohttp import web
from loguru import logger

Reply = Tuple[int, Union[dict, list, str, bytes]]


class PredictionServer:
    """Scriptable stand-in for the prediction service.

    Submissions to ``POST /{model_path}`` and polls of
    ``GET /predictions/{id}/result`` are answered from queues of canned
    replies. When a queue runs dry the last reply keeps being served. Every
    request is recorded so tests can assert on call counts and headers.
    """

    def __init__(self, api_key: str = "test-key"):
        self.api_key = api_key
        self.submit_replies: Dict[str, Deque[Reply]] = {}
        self.result_replies: Dict[str, Deque[Reply]] = {}
        self.requests: List[dict] = []
        self.app = web.Application()
        self.app.router.add_get("/predictions/{job_id}/result", self.handle_result)
        self.app.router.add_post("/{model_path:.+}", self.handle_submit)
        self.runner: Optional[web.AppRunner] = None
        self.logger = logger

    def on_submit(self, model_path: str, *replies: Reply) -> None:
        self.submit_replies.setdefault(model_path.strip("/"), deque()).extend(replies)

    def on_result(self, job_id: str, *replies: Reply) -> None:
        self.result_replies.setdefault(job_id, deque()).extend(replies)

    def result_polls(self, job_id: str) -> int:
        return sum(
            1
            for request in self.requests
            if request["method"] == "GET" and request["path"] == f"/predictions/{job_id}/result"
        )

    def submissions(self, model_path: Optional[str] = None) -> List[dict]:
        return [
            request
            for request in self.requests
            if request["method"] == "POST"
            and (model_path is None or request["path"] == f"/{model_path.strip('/')}")
        ]

    @staticmethod
    def _next_reply(replies: Optional[Deque[Reply]]) -> Reply:
        if not replies:
            return 404, {"code": 1405, "message": "Product not found"}
        if len(replies) > 1:
            return replies.popleft()
        return replies[0]

    @staticmethod
    def _respond(reply: Reply) -> web.Response:
        status, body = reply
        if isinstance(body, bytes):
            return web.Response(status=status, body=body, content_type="application/json")
        if isinstance(body, str):
            return web.Response(status=status, text=body, content_type="application/json")
        return web.json_response(body, status=status)

    async def _record(self, request: web.Request) -> Optional[web.Response]:
        raw_body = await request.text()
        self.requests.append(
            {
                "method": request.method,
                "path": request.path,
                "headers": dict(request.headers),
                "body": json.loads(raw_body) if raw_body else None,
            }
        )
        if request.headers.get("Authorization") != f"Bearer {self.api_key}":
            self.logger.info(f"Rejecting unauthenticated {request.method} {request.path}")
            return web.json_response({"code": 401, "message": "Unauthorized"}, status=401)
        return None

    async def handle_submit(self, request: web.Request) -> web.Response:
        rejected = await self._record(request)
        if rejected is not None:
            return rejected
        model_path = request.match_info["model_path"]
        reply = self._next_reply(self.submit_replies.get(model_path))
        self.logger.info(f"Submission to {model_path} answered with HTTP {reply[0]}")
        return self._respond(reply)

    async def handle_result(self, request: web.Request) -> web.Response:
        rejected = await self._record(request)
        if rejected is not None:
            return rejected
        job_id = request.match_info["job_id"]
        reply = self._next_reply(self.result_replies.get(job_id))
        self.logger.info(f"Result poll for {job_id} answered with HTTP {reply[0]}")
        return self._respond(reply)

    async def start(self, port: int = 8080) -> web.TCPSite:
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()


def pending(job_id: str, status: str = "pending") -> Reply:
    return 200, {"code": 200, "message": "success", "data": {"id": job_id, "status": status}}


def completed(job_id: str, outputs: Any, status: str = "completed") -> Reply:
    return 200, {
        "code": 200,
        "message": "success",
        "data": {"id": job_id, "status": status, "outputs": outputs},
    }
