import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config, __version__
from .api.results_api import router as results_router
from .api.calculation_api import router as calculation_router
from .api.publication_api import router as publication_router
from .api.promotion_api import router as promotion_router
from .api.notification_api import router as notification_router
from .database.connection import create_tables

config.configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="学业成绩管理服务",
    description="成绩计算、发布与晋级决定API文档",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# 配置CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境请设置具体的域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(results_router, prefix="/api/v1/results", tags=["成绩查询API"])
app.include_router(calculation_router, prefix="/api/v1/calculations", tags=["成绩计算API"])
app.include_router(publication_router, prefix="/api/v1/publication", tags=["成绩发布API"])
app.include_router(promotion_router, prefix="/api/v1/promotions", tags=["晋级决定API"])
app.include_router(notification_router, prefix="/api/v1/notifications", tags=["通知API"])


@app.on_event("startup")
async def startup():
    if config.DRAFT_STORAGE_BACKEND == "sql":
        create_tables()
    logger.info(f"Academic results service started (backend: {config.SCHOOL_API_URL})")


@app.get("/")
async def root():
    return {
        "message": "学业成绩管理服务",
        "version": __version__,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("academic_results.main:app", host="0.0.0.0", port=8000, reload=False)
