from dataclasses import dataclass

from fastapi import Query, Request


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


@dataclass(frozen=True)
class Page:
    page: int
    page_size: int


def get_page(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=200),
) -> Page:
    return Page(page=page, page_size=page_size)
