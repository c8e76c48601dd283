import asyncio
from typing import Dict, Optional, Union

import httpx

from config.settings import Settings
from services.github_service import GitHubService

API_URL = 'https://api.github.test'
RAW_URL = 'https://raw.github.test'
RESET_EPOCH = 1700000000


class FakeGitHubAPI:
    """In-process stand-in for the GitHub REST and raw content hosts"""

    def __init__(
        self,
        files: Optional[Dict[str, Union[str, bytes]]] = None,
        branch: str = 'main',
        default_branch: str = 'main',
        size_kb: int = 100,
        remaining: int = 5000
    ):
        self.files = files or {}
        self.branch = branch
        self.default_branch = default_branch
        self.size_kb = size_kb
        self.remaining = remaining
        self.fail_paths = set()
        self.requests = []

    def paths_requested(self, fragment: str):
        return [r.url.path for r in self.requests if fragment in r.url.path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == 'raw.github.test':
            file_path = path.split('/', 4)[4]
            if file_path in self.fail_paths:
                return httpx.Response(500)
            if file_path not in self.files:
                return httpx.Response(404)
            content = self.files[file_path]
            if isinstance(content, str):
                content = content.encode('utf-8')
            return httpx.Response(200, content=content)

        if path == '/rate_limit':
            return httpx.Response(200, json={'rate': {
                'limit': 5000,
                'remaining': self.remaining,
                'reset': RESET_EPOCH,
                'used': 5000 - self.remaining
            }})

        if '/git/trees/' in path:
            if path.rsplit('/', 1)[1] != self.branch:
                return httpx.Response(404, json={'message': 'Not Found'})
            tree = [
                {'path': p, 'type': 'blob', 'sha': f'sha{i}', 'size': len(c)}
                for i, (p, c) in enumerate(self.files.items())
            ]
            tree.append({'path': 'src', 'type': 'tree', 'sha': 'dir'})
            return httpx.Response(200, json={'tree': tree, 'truncated': False})

        if path.startswith('/repos/'):
            return httpx.Response(200, json={
                'default_branch': self.default_branch,
                'size': self.size_kb,
                'private': False
            })

        return httpx.Response(404, json={'message': 'Not Found'})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, settings: Settings, token: Optional[str] = None) -> GitHubService:
        return GitHubService(token, settings=settings, transport=self.transport)


async def wait_until(predicate, timeout: float = 2.0):
    """Yield to the event loop until predicate() holds"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError('condition not reached in time')
        await asyncio.sleep(0.005)


