# agromarket/repos/idempotency_repo.py
import json

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from agromarket.data.models.idempotency_key import IdempotencyKeyModel


class IdempotencyRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int, scope: str, key: str) -> IdempotencyKeyModel | None:
        return self.db.execute(
            select(IdempotencyKeyModel).where(
                IdempotencyKeyModel.user_id == user_id,
                IdempotencyKeyModel.scope == scope,
                IdempotencyKeyModel.key == key,
            )
        ).scalar_one_or_none()

    def reserve(self, user_id: int, scope: str, key: str, request_hash: str) -> IdempotencyKeyModel:
        row = IdempotencyKeyModel(user_id=user_id, scope=scope, key=key, request_hash=request_hash)
        self.db.add(row)
        self.db.commit()
        return row

    def save_response(self, row_id: int, status_code: int, response: dict) -> None:
        self.db.execute(
            update(IdempotencyKeyModel)
            .where(IdempotencyKeyModel.id == row_id)
            .values(status_code=status_code, response_json=json.dumps(response, default=str))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def release(self, row_id: int) -> None:
        #klucz bez zapisanej odpowiedzi (checkout sie nie udal) - klient moze ponowic z tym samym kluczem
        row = self.db.get(IdempotencyKeyModel, row_id)
        if row is not None and row.status_code is None:
            self.db.delete(row)
            self.db.commit()
