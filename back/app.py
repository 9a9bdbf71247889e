import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware


# APIルーターのインポート
from routers.project import command

app = FastAPI(
    title="Project Command Assistant",
    version="1.0"
)

# CORS設定（カンマ区切りで複数指定可）
origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {"message": "Project Command Assistant is running"}

# APIルーターの登録
# 自然言語コマンド（プレビュー / 実行）
app.include_router(command.router, tags=["Project-Command"])


if __name__ == '__main__':
    import uvicorn
    uvicorn.run("app:app", host="localhost", port=8000, reload=True)
