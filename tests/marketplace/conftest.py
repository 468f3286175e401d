import pytest
from protean.integrations.pytest import DomainFixture

ADDRESS = {
    "full_name": "Ada Buyer",
    "street": "1 Market St",
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "US",
}


@pytest.fixture(scope="session")
def marketplace_bed():
    from marketplace.domain import marketplace

    bed = DomainFixture(marketplace)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(marketplace_bed):
    from marketplace.notification import reset_notifier

    with marketplace_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()

    reset_notifier()


@pytest.fixture()
def address():
    return dict(ADDRESS)


@pytest.fixture()
def add_product():
    """Factory that stores an active product and returns it."""
    from marketplace.catalogue.product import Product, ProductStatus
    from protean import current_domain

    def _add(name="Widget", seller_id="seller-x", price=10.0, stock=5, status=ProductStatus.ACTIVE.value, **kwargs):
        product = Product.create(name=name, seller_id=seller_id, price=price, stock=stock, status=status, **kwargs)
        current_domain.repository_for(Product).add(product)
        return product

    return _add


@pytest.fixture()
def add_affiliate():
    from marketplace.affiliate.affiliate import Affiliate
    from protean import current_domain

    def _add(code="AFF123", **kwargs):
        affiliate = Affiliate.register(code=code, user_id=f"user-{code.lower()}", name=f"Affiliate {code}", **kwargs)
        current_domain.repository_for(Affiliate).add(affiliate)
        return affiliate

    return _add


@pytest.fixture()
def notifier():
    from marketplace.notification import get_notifier

    return get_notifier()
