from fastapi import APIRouter

from md2pdf import __version__

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "md2pdf", "version": __version__}
