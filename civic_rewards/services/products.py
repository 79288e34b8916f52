"""
Product Catalog - Redeemable products, availability and stock.

Stock changes only through `reduce_stock`, which runs inside the redemption
unit of work and never commits on its own.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.db.models import Product, Redemption
from civic_rewards.exceptions import (
    InvalidStateError,
    OutOfStockError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from civic_rewards.models.domain import ProductChanges, ProductData, ProductDraft

logger = get_logger(__name__)


def product_is_available(is_active: bool, stock: int | None) -> bool:
    """A product can be redeemed when it is active and not depleted."""
    return is_active and (stock is None or stock > 0)


class ProductCatalog:
    """Product catalog with row-locked stock decrements."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with database session."""
        self.session = session

    async def is_available(self, product_id: UUID) -> bool:
        """
        Check whether a product can currently be redeemed.

        Raises:
            ResourceNotFoundError: Product doesn't exist
        """
        product = await self.session.get(Product, product_id)
        if product is None:
            raise ResourceNotFoundError("Product", product_id)
        return product_is_available(product.is_active, product.stock)

    async def lock_product(self, product_id: UUID) -> Product | None:
        """Lock product row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def reduce_stock(self, product_id: UUID) -> int | None:
        """
        Decrement stock by one inside the caller's transaction.

        Unlimited stock (None) is left untouched. Reaching zero deactivates the
        product in the same write. Returns the new stock.

        Raises:
            ResourceNotFoundError: Product doesn't exist
            OutOfStockError: Stock already exhausted
        """
        product = await self.lock_product(product_id)
        if product is None:
            raise ResourceNotFoundError("Product", product_id)

        if product.stock is None:
            return None

        if product.stock <= 0:
            raise OutOfStockError(product_id)

        product.stock -= 1
        if product.stock == 0:
            product.is_active = False
        await self.session.flush()

        logger.info(
            "product_stock_reduced",
            product_id=str(product_id),
            stock=product.stock,
            is_active=product.is_active,
        )
        return product.stock

    # ========================================================================
    # Admin CRUD
    # ========================================================================

    async def create_product(self, draft: ProductDraft) -> ProductData:
        """Create a product. A product created with zero stock starts inactive."""
        product = Product(
            name=draft.name,
            description=draft.description,
            points_cost=draft.points_cost,
            category=draft.category,
            image_url=draft.image_url,
            is_active=draft.is_active and draft.stock != 0,
            stock=draft.stock,
        )
        self.session.add(product)
        await self.session.flush()

        verified = await self.session.get(Product, product.id)
        if verified is None:
            raise WriteVerificationError(f"Product {product.id} not found after insert")

        await self.session.commit()

        logger.info(
            "product_created",
            product_id=str(verified.id),
            points_cost=verified.points_cost,
            stock=verified.stock,
        )
        return self.to_domain(verified)

    async def update_product(self, product_id: UUID, changes: ProductChanges) -> ProductData:
        """
        Apply an admin edit.

        Raises:
            ResourceNotFoundError: Product doesn't exist
            InvalidStateError: Re-activating a depleted product
        """
        product = await self.lock_product(product_id)
        if product is None:
            raise ResourceNotFoundError("Product", product_id)

        if changes.is_active and product.stock == 0:
            await self.session.rollback()
            raise InvalidStateError(f"Product {product_id} is out of stock and cannot be activated")

        if changes.name is not None:
            product.name = changes.name
        if changes.description is not None:
            product.description = changes.description
        if changes.points_cost is not None:
            product.points_cost = changes.points_cost
        if changes.category is not None:
            product.category = changes.category
        if changes.image_url is not None:
            product.image_url = changes.image_url
        if changes.is_active is not None:
            product.is_active = changes.is_active

        await self.session.flush()
        await self.session.commit()

        logger.info("product_updated", product_id=str(product_id))
        return self.to_domain(product)

    async def get_product(self, product_id: UUID) -> ProductData:
        """
        Get a product.

        Raises:
            ResourceNotFoundError: Product doesn't exist
        """
        product = await self.session.get(Product, product_id)
        if product is None:
            raise ResourceNotFoundError("Product", product_id)
        return self.to_domain(product)

    async def list_products(
        self, active_only: bool = False, category: str | None = None
    ) -> list[ProductData]:
        """List products, newest first."""
        stmt = select(Product)
        if active_only:
            stmt = stmt.where(Product.is_active.is_(True))
        if category is not None:
            stmt = stmt.where(Product.category == category)
        stmt = stmt.order_by(Product.created_at.desc())

        result = await self.session.execute(stmt)
        return [self.to_domain(product) for product in result.scalars().all()]

    async def delete_product(self, product_id: UUID) -> None:
        """
        Delete a product that was never redeemed.

        Raises:
            ResourceNotFoundError: Product doesn't exist
            InvalidStateError: Product has redemptions (deactivate it instead)
        """
        product = await self.lock_product(product_id)
        if product is None:
            raise ResourceNotFoundError("Product", product_id)

        count_stmt = (
            select(func.count())
            .select_from(Redemption)
            .where(Redemption.product_id == product_id)
        )
        redemption_count = (await self.session.execute(count_stmt)).scalar_one()
        if redemption_count:
            await self.session.rollback()
            raise InvalidStateError(
                f"Product {product_id} has {redemption_count} redemptions; deactivate it instead"
            )

        await self.session.delete(product)
        await self.session.commit()

        logger.info("product_deleted", product_id=str(product_id))

    @staticmethod
    def to_domain(product: Product) -> ProductData:
        """Convert ORM product to domain model."""
        return ProductData(
            product_id=product.id,
            name=product.name,
            description=product.description,
            points_cost=product.points_cost,
            category=product.category,
            image_url=product.image_url,
            is_active=product.is_active,
            stock=product.stock,
            created_at=product.created_at,
            updated_at=product.updated_at,
        )
