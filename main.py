from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel
from echopages.database_con import engine
from echopages.db_models import AudioChunk, Book, Chapter, Job
from echopages.routers import books, chapters, voices

app = FastAPI(title="EchoPages")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create database tables
SQLModel.metadata.create_all(engine)

# Include routers
app.include_router(books.router)
app.include_router(chapters.router)
app.include_router(voices.router)
