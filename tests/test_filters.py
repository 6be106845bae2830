from datetime import datetime, timezone

from filters import (
    CONTACT_RULES,
    FRAME_RULES,
    INQUIRY_RULES,
    SUNGLASSES_RULES,
    Listing,
    apply_filters,
    build_predicate,
    distinct_values,
    search_items,
    submission_stats,
)
from schemas import DateRange, FrameFilters, InquiryFilters, PriceRange, SunglassesFilters
from sorting import SortOption


def ids(items):
    return [item.id if hasattr(item, "id") else item["id"] for item in items]


def test_brand_matches_ignoring_case(frames):
    assert ids(apply_filters(frames, {"brand": "RAY-BAN"}, FRAME_RULES)) == ["frame-1", "frame-4"]


def test_gender_filter_lets_unisex_through(frames):
    assert ids(apply_filters(frames, {"gender": "women"}, FRAME_RULES)) == ["frame-1", "frame-3"]
    assert ids(apply_filters(frames, {"gender": "men"}, FRAME_RULES)) == ["frame-1", "frame-2", "frame-4"]


def test_price_range_is_inclusive(frames):
    criteria = FrameFilters(price_range=PriceRange(min=100, max=150))
    assert ids(apply_filters(frames, criteria, FRAME_RULES)) == ["frame-1", "frame-4"]


def test_in_stock_false_selects_out_of_stock(frames):
    assert ids(apply_filters(frames, FrameFilters(in_stock=False), FRAME_RULES)) == ["frame-2"]


def test_color_is_a_substring_match(frames):
    assert ids(apply_filters(frames, {"color": "black"}, FRAME_RULES)) == ["frame-2"]


def test_unset_and_empty_criteria_do_not_constrain(frames):
    assert apply_filters(frames, None, FRAME_RULES) == frames
    assert apply_filters(frames, FrameFilters(), FRAME_RULES) == frames
    assert apply_filters(frames, {"brand": "", "material": None}, FRAME_RULES) == frames


def test_criteria_combine_with_and(frames):
    criteria = FrameFilters(brand="ray-ban", gender="men", material="titanium")
    assert ids(apply_filters(frames, criteria, FRAME_RULES)) == ["frame-4"]


def test_adding_a_criterion_never_grows_the_result(frames):
    loose = apply_filters(frames, {"gender": "men"}, FRAME_RULES)
    tight = apply_filters(frames, {"gender": "men", "in_stock": True}, FRAME_RULES)
    assert set(ids(tight)) <= set(ids(loose))


def test_sunglasses_lens_filters(sunglasses):
    assert ids(apply_filters(sunglasses, SunglassesFilters(polarized=True), SUNGLASSES_RULES)) == ["sg-1"]
    assert ids(apply_filters(sunglasses, SunglassesFilters(uv_protection=True), SUNGLASSES_RULES)) == [
        "sg-1", "sg-3",
    ]
    assert ids(apply_filters(sunglasses, SunglassesFilters(uv_protection=False), SUNGLASSES_RULES)) == ["sg-2"]


def test_search_covers_features_and_trims_query(frames):
    assert ids(search_items(frames, "  blue LIGHT ")) == ["frame-3"]
    assert ids(search_items(frames, "ray")) == ["frame-1", "frame-4"]
    assert search_items(frames, "   ") == frames
    assert search_items(frames, "no such thing") == []


def test_distinct_values_are_sorted_and_unique(frames):
    assert distinct_values(frames, "material") == ["acetate", "metal", "titanium"]


def test_predicate_works_on_wire_dicts(frames):
    predicate = build_predicate(FrameFilters(in_stock=True, brand="vogue"), FRAME_RULES)
    assert [f.id for f in frames if predicate(f.to_wire())] == ["frame-3"]


def inquiry(id, status, created, product_type="frame"):
    return {
        "id": id,
        "status": status,
        "priority": "medium",
        "customerInfo": {"name": id.title(), "email": f"{id}@example.com"},
        "product": {"type": product_type, "name": "Classic Round"},
        "createdAt": created,
    }


INQUIRIES = [
    inquiry("ann", "new", "2024-05-20T12:00:00Z"),
    inquiry("bob", "in-progress", "2024-05-02T09:00:00Z", "sunglasses"),
    inquiry("cid", "completed", "2024-04-28T09:00:00Z"),
    inquiry("dee", "new", "2024-05-19T01:00:00Z", "sunglasses"),
]


def test_inquiry_filters_reach_nested_fields_and_dates():
    criteria = InquiryFilters(
        product_type="sunglasses",
        date_range=DateRange(start=datetime(2024, 5, 1, tzinfo=timezone.utc),
                             end=datetime(2024, 5, 10, tzinfo=timezone.utc)),
    )
    assert ids(apply_filters(INQUIRIES, criteria, INQUIRY_RULES)) == ["bob"]
    assert ids(apply_filters(INQUIRIES, {"status": "new"}, INQUIRY_RULES)) == ["ann", "dee"]


def test_contact_source_filter():
    contacts = [{"id": "c1", "source": "phone"}, {"id": "c2", "source": "contact-form"}]
    assert ids(apply_filters(contacts, {"source": "phone"}, CONTACT_RULES)) == ["c1"]


def test_submission_stats_counts_month_and_sunday_based_week():
    # 2024-05-22 is a Wednesday; the week started on Sunday 2024-05-19
    now = datetime(2024, 5, 22, 15, 0, tzinfo=timezone.utc)
    stats = submission_stats(INQUIRIES, now)
    assert stats.total == 4
    assert (stats.new, stats.in_progress, stats.completed) == (2, 1, 1)
    assert stats.this_month == 3
    assert stats.this_week == 2


def test_listing_pipeline(frames):
    listing = Listing(sort_options=[SortOption("price", "Price", "number")], page_size=2)
    listing.set_page(2)
    listing.set_search("a")
    assert listing.pagination.page == 1
    listing.update_filter("in_stock", True)
    page = listing.current(frames)
    assert ids(page.items) == ["frame-3", "frame-1"]
    assert page.total == 3
    listing.sort_by("price")
    assert ids(listing.visible(frames)) == ["frame-1", "frame-4", "frame-3"]
    listing.clear_filters()
    assert listing.criteria is None
    assert len(listing.visible(frames)) == 4


def test_combined_filter_equals_intersection(frames):
    by_gender = set(ids(apply_filters(frames, {"gender": "men"}, FRAME_RULES)))
    by_price = set(ids(apply_filters(frames, {"price_range": {"min": 100, "max": 160}}, FRAME_RULES)))
    both = ids(apply_filters(frames, {"gender": "men", "price_range": {"min": 100, "max": 160}}, FRAME_RULES))
    assert set(both) == by_gender & by_price


def test_pipeline_scenario_second_page_of_ray_ban_by_price():
    brands = ["Ray-Ban" if n < 8 else "Oakley" for n in range(25)]
    catalog = [
        {"id": f"frame-{n}", "name": f"Model {n}", "brand": brand, "price": 100 + n * 10}
        for n, brand in enumerate(brands)
    ]
    listing = Listing(sort_options=[SortOption("price", "Price", "number")], page_size=5)
    listing.set_search("")
    listing.set_filters({"brand": "Ray-Ban"})
    listing.sort_by("price")
    assert listing.sorting.direction == "desc"
    listing.set_page(2)
    page = listing.current(catalog)
    ranked = sorted((item for item in catalog if item["brand"] == "Ray-Ban"), key=lambda i: -i["price"])
    assert page.items == ranked[5:8]
    assert len(page.items) == 3
