"""
Catalog store: product listing, lookup, admin edits, reviews and stock.
"""

import re
from typing import List, Optional, Tuple

import structlog
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import Database, paginate, serialize, to_object_id, utcnow
from errors import DuplicateReview, DuplicateSku, NotFound
from schemas import Product, ProductCreate, ProductSort, ProductUpdate, Review

logger = structlog.get_logger(__name__)

SORTS = {
    ProductSort.price_asc.value: [("price", 1)],
    ProductSort.price_desc.value: [("price", -1)],
    ProductSort.rating.value: [("average_rating", -1)],
    ProductSort.newest.value: [("created_at", -1)],
}

# relevance weight per field for free-text search
SEARCH_WEIGHTS = {
    "name": 3,
    "tags": 2,
    "brand": 2,
    "category": 2,
    "description": 1,
}
# most products a search ranks in memory; the rest of the matches are dropped
SEARCH_CANDIDATES = 500


def search_terms(text: str) -> List[str]:
    return [t for t in re.split(r"\W+", text.lower()) if t]


def term_pattern(term: str) -> str:
    # a term matches at the start of a word: "lamp" finds "lamps", "art" skips "smart"
    return r"\b" + re.escape(term)


def relevance(doc: dict, terms: List[str]) -> int:
    score = 0
    for field, weight in SEARCH_WEIGHTS.items():
        value = doc.get(field)
        if not value:
            continue
        haystack = " ".join(value).lower() if isinstance(value, list) else str(value).lower()
        for term in terms:
            if re.search(term_pattern(term), haystack):
                score += weight
    return score


class CatalogStore:
    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db.products

    def list_products(
        self,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        rating: Optional[float] = None,
        brand: Optional[str] = None,
        featured: bool = False,
        search: Optional[str] = None,
        sort: Optional[str] = None,
        page: int = 1,
        limit: int = 12,
    ) -> Tuple[List[dict], dict]:
        filt = {"is_active": True}
        if category:
            filt["category"] = category
        if min_price is not None or max_price is not None:
            filt["price"] = {}
            if min_price is not None:
                filt["price"]["$gte"] = min_price
            if max_price is not None:
                filt["price"]["$lte"] = max_price
        if rating is not None:
            filt["average_rating"] = {"$gte": rating}
        if brand:
            filt["brand"] = {"$regex": re.escape(brand), "$options": "i"}
        if featured:
            filt["is_featured"] = True

        skip = (page - 1) * limit
        projection = {"reviews": 0}
        order = SORTS.get(sort, SORTS[ProductSort.newest.value])
        terms = search_terms(search) if search else []

        if terms:
            filt["$or"] = [
                {field: {"$regex": term_pattern(term), "$options": "i"}}
                for term in terms
                for field in SEARCH_WEIGHTS
            ]
            cursor = self.collection.find(filt, projection).sort(order).limit(SEARCH_CANDIDATES)
            matched = list(cursor)
            # stable sort keeps the requested order among equally relevant hits
            matched.sort(key=lambda d: relevance(d, terms), reverse=True)
            total = len(matched)
            docs = matched[skip:skip + limit]
        else:
            cursor = self.collection.find(filt, projection).sort(order).skip(skip).limit(limit)
            docs = list(cursor)
            total = self.collection.count_documents(filt)

        return [serialize(d) for d in docs], paginate(page, limit, total)

    def get_product(self, product_id: str, include_inactive: bool = False) -> dict:
        doc = self.collection.find_one({"_id": to_object_id(product_id, "Product")})
        if not doc or (not doc.get("is_active", True) and not include_inactive):
            raise NotFound("Product not found")
        return serialize(doc)

    def get_product_detail(self, product_id: str, include_inactive: bool = False) -> dict:
        """Single-product view: reviews carry their author and the creator is resolved."""
        product = self.get_product(product_id, include_inactive)
        reviews = product.get("reviews", [])
        users = self.db.users_by_id([r["user_id"] for r in reviews] + [product.get("created_by")])
        for review in reviews:
            review["user"] = users.get(review["user_id"])
        product["creator"] = users.get(product.get("created_by"))
        return product

    def create_product(self, data: ProductCreate, created_by: Optional[str] = None) -> dict:
        sku = data.sku.strip().upper()
        if self.collection.find_one({"sku": sku}):
            raise DuplicateSku()
        product = Product(**{**data.model_dump(), "sku": sku, "name": data.name.strip()}, created_by=created_by)
        try:
            pid = self.db.create_document("product", product)
        except DuplicateKeyError:
            raise DuplicateSku()
        logger.info("product_created", product_id=pid, sku=sku)
        return self.get_product(pid, include_inactive=True)

    def update_product(self, product_id: str, data: ProductUpdate) -> dict:
        oid = to_object_id(product_id, "Product")
        changes = data.model_dump(exclude_unset=True)
        if "sku" in changes:
            changes["sku"] = changes["sku"].strip().upper()
            if self.collection.find_one({"sku": changes["sku"], "_id": {"$ne": oid}}):
                raise DuplicateSku()
        changes["updated_at"] = utcnow()
        try:
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise DuplicateSku()
        if not doc:
            raise NotFound("Product not found")
        return serialize(doc)

    def delete_product(self, product_id: str) -> None:
        result = self.collection.update_one(
            {"_id": to_object_id(product_id, "Product")},
            {"$set": {"is_active": False, "updated_at": utcnow()}},
        )
        if result.matched_count == 0:
            raise NotFound("Product not found")
        logger.info("product_deactivated", product_id=product_id)

    def add_review(self, product_id: str, user_id: str, rating: int, comment: str) -> dict:
        oid = to_object_id(product_id, "Product")
        doc = self.collection.find_one({"_id": oid})
        if not doc:
            raise NotFound("Product not found")
        reviews = doc.get("reviews", [])
        if any(r.get("user_id") == user_id for r in reviews):
            raise DuplicateReview()

        review = Review(user_id=user_id, rating=rating, comment=comment, created_at=utcnow()).model_dump()
        ratings = [r["rating"] for r in reviews] + [rating]
        average = sum(ratings) / len(ratings)

        result = self.collection.update_one(
            {"_id": oid, "reviews.user_id": {"$ne": user_id}},
            {
                "$push": {"reviews": review},
                "$set": {"average_rating": average, "total_reviews": len(ratings), "updated_at": utcnow()},
            },
        )
        if result.modified_count == 0:
            raise DuplicateReview()
        return {"review": review, "average_rating": average, "total_reviews": len(ratings)}

    def adjust_stock(self, product_id: str, delta: int) -> bool:
        """Atomically add `delta` to a product's stock.

        A decrement only applies when enough stock remains, so stock never
        goes negative; False means nothing was changed.
        """
        filt = {"_id": to_object_id(product_id, "Product")}
        if delta < 0:
            filt["stock"] = {"$gte": -delta}
        result = self.collection.update_one(filt, {"$inc": {"stock": delta}, "$set": {"updated_at": utcnow()}})
        return result.modified_count == 1

    def list_categories(self) -> List[str]:
        return sorted(c for c in self.collection.distinct("category", {"is_active": True}) if c)
