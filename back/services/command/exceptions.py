"""
コマンド実行時の例外定義

CommandError のメッセージはそのままエンドユーザーに表示してよい文言のみを持つ。
"""


class CommandError(Exception):
    """ユーザーに表示可能なメッセージを持つ例外の基底クラス"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TaskNotFoundError(CommandError):
    """プロジェクト内に対象タスクが存在しない"""

    def __init__(self, task_id: int):
        super().__init__(f"Task #{task_id} was not found in this project.")
        self.task_id = task_id


class UnresolvableReferenceError(CommandError):
    """担当者などの参照を解決できない"""

    def __init__(self, kind: str, hint: str):
        super().__init__(f"{kind} '{hint}' could not be determined.")
        self.kind = kind
        self.hint = hint


class TaskGenerationError(CommandError):
    """AI によるタスク生成で利用可能な結果が得られなかった"""

    def __init__(self, message: str = "❌ Task generation failed. Please try again."):
        super().__init__(message)
