"""Pet ownership collaborator"""

from typing import Callable, Protocol

from sqlalchemy.orm import Session

from ..models import Pet


class OwnershipValidator(Protocol):
    def validate_pet_ownership(self, pet_id: str, user_id: str) -> bool: ...


class DatabaseOwnershipValidator:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def validate_pet_ownership(self, pet_id: str, user_id: str) -> bool:
        db = self.session_factory()
        try:
            pet = db.query(Pet).filter(Pet.id == pet_id).first()
            return pet is not None and pet.owner_id == user_id
        finally:
            db.close()
