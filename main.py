import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import config
from routes.forum import router as forum_router
from routes.posts import router as posts_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="LMS Forum API")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


# Registered after CORSMiddleware so it runs first: unknown origins never reach a handler
@app.middleware("http")
async def reject_unknown_origins(request: Request, call_next):
    origin = request.headers.get("origin")
    if origin not in config.ALLOWED_ORIGINS:
        logging.getLogger(__name__).warning("Rejected request from origin %r", origin)
        return JSONResponse(status_code=403, content={"detail": "Forbidden: invalid origin"})
    return await call_next(request)


# Include routers
app.include_router(forum_router)
app.include_router(posts_router)


@app.get("/ping")
def ping():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT)
