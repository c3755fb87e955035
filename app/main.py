from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api import routes_auth, lesson_plan
from app.core.config import CORS_ORIGINS

app = FastAPI(title="AI Lesson Planner Backend")

# CORS settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(routes_auth.router)
app.include_router(lesson_plan.router, prefix="/api", tags=["lesson_plan"])


@app.get("/")
def read_root():
    return {"message": "AI Lesson Planner API is running"}
