from sqlalchemy.orm import Session
from models.catalog import Product

def get_product(db: Session, product_id: int) -> Product | None:
    return db.query(Product).filter(Product.id == product_id, Product.deleted == False).first()

def get_products(db: Session, product_ids: list[int]) -> dict[int, Product]:
    if not product_ids:
        return {}
    products = db.query(Product).filter(Product.id.in_(product_ids), Product.deleted == False).all()
    return {product.id: product for product in products}
