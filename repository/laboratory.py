from sqlalchemy import func
from sqlalchemy.orm import Session
from models.clinic import Laboratory
from models.laboratory import LaboratoryOrder
from models.model_enums import LaboratoryOrderStatus, LaboratoryStatus

def get_laboratory(db: Session, laboratory_id: int) -> Laboratory | None:
    return db.query(Laboratory).filter(Laboratory.id == laboratory_id).first()

def get_default_laboratory(db: Session) -> Laboratory | None:
    '''
    First active laboratory, else the first one in any status
    '''
    laboratory = db.query(Laboratory).filter(Laboratory.status == LaboratoryStatus.ACTIVE) \
        .order_by(Laboratory.id.asc()).first()
    if laboratory:
        return laboratory
    return db.query(Laboratory).order_by(Laboratory.id.asc()).first()

def get_lab_order(db: Session, lab_order_id: int) -> LaboratoryOrder | None:
    return db.query(LaboratoryOrder).filter(LaboratoryOrder.id == lab_order_id).first()

def get_lab_order_for_sale(db: Session, sale_id: int) -> LaboratoryOrder | None:
    return db.query(LaboratoryOrder).filter(LaboratoryOrder.sale_id == sale_id).first()

def count_lab_orders_by_status(db: Session) -> dict[LaboratoryOrderStatus, int]:
    rows = db.query(LaboratoryOrder.status, func.count(LaboratoryOrder.id)) \
        .group_by(LaboratoryOrder.status).all()
    counts = {status: 0 for status in LaboratoryOrderStatus}
    for status, count in rows:
        counts[status] = count
    return counts
