import os
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from dotenv import load_dotenv

# 環境変数の読み込み
load_dotenv()


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./command_assistant.db")

# SQLite はスレッドをまたいだ接続利用を許可する必要がある（FastAPI の同期エンドポイント用）
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# エンジンの作成
engine = create_engine(DATABASE_URL, echo=False, connect_args=connect_args)

# セッション作成用のファクトリ
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# SQLAlchemy のベースクラス（モデル定義で継承する）
Base = declarative_base()

# DBセッション取得用 dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# スクリプト・バッチ用の独立したDBセッション
@contextmanager
def get_db_session() -> Session:
    """
    リクエスト外（create_tables やバッチ処理）で使う DB セッションのコンテキストマネージャー
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
