from fastapi import APIRouter, Depends

from ChatBackend.deps import get_image_service
from ChatBackend.schemas.chat import ImageRequest
from ChatBackend.services.image_service import ImageService


router = APIRouter()


# Generates one image for a chat; returns {imageUrl} or {error} with a non-2xx status
@router.post("/generate-image")
async def generate_image(payload: ImageRequest, svc: ImageService = Depends(get_image_service)):
    return await svc.generate_image(payload=payload)
