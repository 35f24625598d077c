import uuid

from src.extensions import db
from src.utils import to_float


class Product(db.Model):
    __tablename__ = "products"

    product_id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    artisan_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("users.user_id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(100), nullable=False, default="")
    price = db.Column(db.Numeric(10, 2), nullable=False)
    image = db.Column(db.Text, nullable=False, default="")
    # Authenticity anchors recorded when the product was registered on-chain
    ipfs_metadata_hash = db.Column(db.String(128), nullable=False, default="")
    blockchain_txn = db.Column(db.String(128), nullable=False, default="")
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    artisan = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "product_id": str(self.product_id),
            "artisan_id": str(self.artisan_id),
            "title": self.title,
            "category": self.category,
            "price": to_float(self.price),
            "image": self.image,
            "ipfsMetadataHash": self.ipfs_metadata_hash or None,
            "blockchainTxn": self.blockchain_txn or None,
        }
