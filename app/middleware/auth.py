from typing import Optional

from fastapi import Header, HTTPException


async def get_actor_id(
    x_user_id: Optional[str] = Header(None),
) -> str:
    """
    Get the acting admin user's ID from the X-User-ID header.

    The admin UI sits behind the company SSO proxy, which sets the header;
    every write is attributed to this ID in the assignment history.

    Usage:
        @router.post("/endpoint")
        async def endpoint(actor_id: str = Depends(get_actor_id)):
            ...
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail="User ID required. Provide X-User-ID header."
        )

    return x_user_id.strip()
