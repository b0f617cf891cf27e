"""
Contact tag routes.

- POST /contacts/{id}/tags/{tag_id} - Add tag to contact
- DELETE /contacts/{id}/tags/{tag_id} - Remove tag from contact
"""

from fastapi import APIRouter, Depends

from ..container import CrmContainer
from ..utils.auth_helpers import verify_token
from ..utils.http_errors import to_http_exception
from .deps import get_container

router = APIRouter(prefix="/contacts", tags=["Contacts"])


@router.post("/{contact_id}/tags/{tag_id}")
async def add_contact_tag(
    contact_id: str,
    tag_id: str,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    try:
        link = await container.tags.add_tag_to_contact(contact_id, tag_id)
    except Exception as e:
        raise to_http_exception(e, op_name="contacts.tags.add")
    return {"success": True, "contactTag": link}


@router.delete("/{contact_id}/tags/{tag_id}")
async def remove_contact_tag(
    contact_id: str,
    tag_id: str,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    try:
        await container.tags.remove_tag_from_contact(contact_id, tag_id)
    except Exception as e:
        raise to_http_exception(e, op_name="contacts.tags.remove")
    return {"success": True}
