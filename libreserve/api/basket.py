from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from libreserve.api.deps import Actor, require_owner
from libreserve.core.database import get_db
from libreserve.schemas import schemas
from libreserve.services.basket import BasketStore, basket_entry

router = APIRouter(prefix="/users/{user_id}/basket", tags=["basket"])


@router.get("", response_model=schemas.BasketOut)
def get_basket(user_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_owner)):
    items = [basket_entry(i) for i in BasketStore(db).list(user_id)]
    available = sum(1 for i in items if i["available"])
    return {
        "user_id": user_id,
        "items": items,
        "total": len(items),
        "summary": {
            "total_items": len(items),
            "available_items": available,
            "unavailable_items": len(items) - available,
        },
    }


@router.post("", response_model=schemas.BasketItemOut, status_code=201)
def add_to_basket(user_id: int, item_in: schemas.BasketAdd, db: Session = Depends(get_db),
                  actor: Actor = Depends(require_owner)):
    item = BasketStore(db).add(user_id, item_in.book_id)
    return basket_entry(item)


@router.get("/availability", response_model=schemas.BasketAvailabilityOut)
def check_basket_availability(user_id: int, db: Session = Depends(get_db),
                              actor: Actor = Depends(require_owner)):
    return BasketStore(db).check_availability(user_id)


@router.delete("/{book_id}", status_code=204)
def remove_from_basket(user_id: int, book_id: int, db: Session = Depends(get_db),
                       actor: Actor = Depends(require_owner)):
    BasketStore(db).remove(user_id, book_id)


@router.delete("", response_model=schemas.BasketClearOut)
def clear_basket(user_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_owner)):
    return {"removed": BasketStore(db).clear(user_id)}
