from asbuilt_router.api.routes.submissions import build_submissions_router

__all__ = ["build_submissions_router"]
