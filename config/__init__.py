# shared_task 가 settings 의 CELERY_* 설정을 쓰도록 앱을 먼저 로드
from .celery import app as celery_app

__all__ = ("celery_app",)
