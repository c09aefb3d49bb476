import pytest

from storefront.services import review_service
from storefront.validation import InvalidRatingError, NotFoundError


def test_add_and_average(alice, bob, laptop):
    review_service.add_review(laptop.id, alice.id, 5, "Great laptop!", "Fast and light.")
    review_service.add_review(laptop.id, bob.id, 4)
    review_service.add_review(laptop.id, None, 4)

    assert len(review_service.list_reviews(laptop.id)) == 3
    assert review_service.average_rating(laptop.id) == 4.33


def test_no_reviews_has_no_average(laptop):
    assert review_service.average_rating(laptop.id) is None


@pytest.mark.parametrize("rating", [0, 6, -1, True, 4.5])
def test_rating_out_of_range(alice, laptop, rating):
    with pytest.raises(InvalidRatingError):
        review_service.add_review(laptop.id, alice.id, rating)

    assert review_service.list_reviews(laptop.id) == []


def test_unknown_product_or_user(alice, laptop):
    with pytest.raises(NotFoundError):
        review_service.add_review(999, alice.id, 3)
    with pytest.raises(NotFoundError):
        review_service.add_review(laptop.id, 999, 3)
