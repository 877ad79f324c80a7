from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from pytest_bdd import given, parsers, scenario, then, when

pytestmark = pytest.mark.bdd


@scenario("features/ats.feature", "Paginate a filtered job listing")
def test_paginate_filtered_listing() -> None:
    pass


@scenario("features/ats.feature", "Posting a job invalidates cached listings")
def test_posting_invalidates_cache() -> None:
    pass


@scenario("features/ats.feature", "A candidate cannot apply to the same job twice")
def test_duplicate_application() -> None:
    pass


@pytest.fixture
def context() -> dict[str, object]:
    return {}


@given(parsers.parse('an admin has posted {count:d} "{title}" jobs'))
@when(parsers.parse('an admin has posted {count:d} "{title}" jobs'))
def post_jobs(client: TestClient, admin_headers, count: int, title: str) -> None:
    for index in range(count):
        response = client.post(
            "/api/jobs",
            headers=admin_headers,
            json={
                "title": f"{title} {index}",
                "description": "Join the team",
                "location": "Remote",
                "salary_range": "negotiable",
            },
        )
        assert response.status_code == 201


@given("the first page of jobs has been cached")
def cache_first_page(client: TestClient, admin_headers, fake_cache) -> None:
    assert client.get("/api/jobs", headers=admin_headers).status_code == 200
    assert any(key.startswith("jobs:v") for key in fake_cache.values)


@when(
    parsers.parse('page {page:d} of "{search}" jobs is requested with {limit:d} per page'),
    target_fixture="response",
)
def request_listing(client: TestClient, admin_headers, page: int, search: str, limit: int):
    return client.get(
        "/api/jobs",
        headers=admin_headers,
        params={"page": page, "limit": limit, "search": search},
    )


@then(parsers.parse("{count:d} jobs are returned"))
def jobs_returned(response, count: int) -> None:
    assert response.status_code == 200
    assert len(response.json()["jobs"]) == count


@then(parsers.parse("the listing reports {pages:d} total pages"))
def listing_pages(response, pages: int) -> None:
    assert response.json()["pagination"]["total_pages"] == pages


@then(parsers.parse("the first page of jobs lists {count:d} jobs"))
def first_page_lists(client: TestClient, admin_headers, count: int) -> None:
    body = client.get("/api/jobs", headers=admin_headers).json()
    assert body["pagination"]["total"] == count
    assert len(body["jobs"]) == count


@given("a candidate with a profile and an open job")
def candidate_and_job(
    client: TestClient,
    admin_headers,
    candidate_headers,
    context: dict[str, object],
) -> None:
    context["headers"] = candidate_headers("ada@example.com")
    job = client.post(
        "/api/jobs",
        headers=admin_headers,
        json={
            "title": "Backend Engineer",
            "description": "Build Python APIs",
            "location": "Remote",
            "salary_range": "120k",
        },
    )
    context["job_id"] = job.json()["id"]


@when("the candidate applies to the job twice")
def apply_twice(client: TestClient, context: dict[str, object]) -> None:
    context["responses"] = [
        client.post(
            "/api/applications",
            headers=context["headers"],
            json={"job_id": context["job_id"]},
        )
        for _ in range(2)
    ]


@then(parsers.parse('the first application has status "{status}"'))
def first_application_status(context: dict[str, object], status: str) -> None:
    first = context["responses"][0]
    assert first.status_code == 201
    assert first.json()["status"] == status


@then("the second application is rejected as a conflict")
def second_application_conflicts(context: dict[str, object]) -> None:
    assert context["responses"][1].status_code == 409
