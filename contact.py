from fastapi import APIRouter, Depends

from envelope import ok
from mail_service import Mailer, get_mailer
from schemas import ContactMessage

router = APIRouter(prefix="/api/contact", tags=["contact"])


@router.post("")
async def send_message(body: ContactMessage, mailer: Mailer = Depends(get_mailer)):
    await mailer.send_contact_message(body.name, body.email, body.message)
    return ok(message="Message sent successfully")
