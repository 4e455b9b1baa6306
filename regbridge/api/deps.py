import httpx
from fastapi import Request

from regbridge.services.site_directory import DirectoryCache


def get_http(request: Request) -> httpx.AsyncClient:
    return request.app.state.http


def get_directory(request: Request) -> DirectoryCache:
    return request.app.state.directory
