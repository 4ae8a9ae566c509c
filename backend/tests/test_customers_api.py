"""
Customer and interaction API.

Verifies:
- Customer CRUD, duplicate e-mail rejection, filtering and stats
- Deleting a customer removes its interactions
- Customers with documents cannot be deleted
- Interactions can only be edited by their author or an admin
"""

from datetime import timedelta

from crm.extensions import db
from crm.models import Customer, Event, Interaction
from crm.services import proposal_service
from crm.time_utils import utcnow


def create_interaction(client, headers, customer_id, **overrides):
    payload = {
        "customer_id": customer_id,
        "type": "PHONE",
        "description": "Discussed renewal",
    }
    payload.update(overrides)
    return client.post('/api/interactions', headers=headers, json=payload)


class TestCustomerCrud:

    def test_create(self, client, user, user_headers):
        response = client.post('/api/customers', headers=user_headers, json={
            "first_name": "Alan",
            "last_name": "Turing",
            "email": "Alan@Example.com",
            "company": "Bletchley",
            "status": "LEAD",
            "source": "WEBSITE",
            "tags": ["enterprise", "enterprise", " priority "],
            "address": {"city": "London", "country": "UK"},
        })

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["email"] == "alan@example.com"
        assert data["tags"] == ["enterprise", "priority"]
        assert data["address"]["city"] == "London"
        assert data["assigned_to_user_id"] == user.id

    def test_create_missing_fields(self, client, user_headers):
        response = client.post('/api/customers', headers=user_headers, json={"first_name": "Only"})
        assert response.status_code == 400

    def test_create_invalid_status(self, client, user_headers):
        response = client.post('/api/customers', headers=user_headers, json={
            "first_name": "Bad",
            "last_name": "Status",
            "email": "bad@example.com",
            "status": "VIP",
        })
        assert response.status_code == 400

    def test_duplicate_email(self, client, user_headers, customer):
        response = client.post('/api/customers', headers=user_headers, json={
            "first_name": "Other",
            "last_name": "Grace",
            "email": "GRACE@example.com",
        })
        assert response.status_code == 409

    def test_update_sets_last_contact(self, client, user_headers, customer):
        assert customer.last_contact_at is None

        response = client.put(f'/api/customers/{customer.id}', headers=user_headers, json={"customer_value": 4})

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["customer_value"] == 4
        assert data["last_contact_at"] is not None

    def test_update_value_out_of_range(self, client, user_headers, customer):
        response = client.put(f'/api/customers/{customer.id}', headers=user_headers, json={"customer_value": 9})
        assert response.status_code == 400

    def test_get_missing(self, client, user_headers):
        response = client.get('/api/customers/424242', headers=user_headers)
        assert response.status_code == 404


class TestCustomerListing:

    def _seed(self, user):
        rows = [
            ("Ada", "Lovelace", "ada@example.com", "LEAD", "WEBSITE", ["math"]),
            ("Linus", "Torvalds", "linus@example.com", "ACTIVE", "SOCIAL_MEDIA", ["kernel"]),
            ("Margaret", "Hamilton", "margaret@example.com", "ACTIVE", "REFERRAL", ["space", "math"]),
        ]
        for first, last, email, status, source, tags in rows:
            db.session.add(Customer(
                first_name=first, last_name=last, email=email,
                status=status, source=source, tags=tags, assigned_to_user_id=user.id,
            ))
        db.session.commit()

    def test_filter_and_paginate(self, client, user, user_headers):
        self._seed(user)

        response = client.get('/api/customers?status=ACTIVE&limit=1&sort_by=first_name:asc', headers=user_headers)

        body = response.get_json()
        assert response.status_code == 200
        assert body["total"] == 2
        assert body["total_pages"] == 2
        assert [c["first_name"] for c in body["data"]] == ["Linus"]

    def test_search_and_tags(self, client, user, user_headers):
        self._seed(user)

        search = client.get('/api/customers?search=hamil', headers=user_headers).get_json()
        assert [c["email"] for c in search["data"]] == ["margaret@example.com"]

        tagged = client.get('/api/customers?tags=math', headers=user_headers).get_json()
        assert tagged["total"] == 2

    def test_invalid_sort(self, client, user_headers):
        response = client.get('/api/customers?sort_by=password', headers=user_headers)
        assert response.status_code == 400

    def test_stats(self, client, user, user_headers):
        self._seed(user)

        data = client.get('/api/customers/stats', headers=user_headers).get_json()["data"]

        assert data["total"] == 3
        assert data["by_status"]["ACTIVE"] == 2
        assert data["by_status"]["LOST"] == 0
        assert data["by_source"]["REFERRAL"] == 1


class TestCustomerDelete:

    def test_delete_removes_interactions(self, client, user_headers, customer):
        create_interaction(client, user_headers, customer.id)
        create_interaction(client, user_headers, customer.id, type="EMAIL", description="Sent brochure")
        event = Event(
            user_id=customer.assigned_to_user_id,
            customer_id=customer.id,
            title="Kick-off",
            start_at=utcnow() + timedelta(days=1),
            end_at=utcnow() + timedelta(days=1, hours=1),
        )
        db.session.add(event)
        db.session.commit()
        customer_id = customer.id

        response = client.delete(f'/api/customers/{customer_id}', headers=user_headers)

        assert response.status_code == 200
        assert response.get_json()["data"]["interactions_deleted"] == 2
        db.session.expire_all()
        assert db.session.get(Customer, customer_id) is None
        assert db.session.query(Interaction).filter_by(customer_id=customer_id).count() == 0
        assert db.session.get(Event, event.id).customer_id is None

    def test_delete_blocked_by_documents(self, client, user, user_headers, customer):
        proposal_service.create_proposal({
            "customer_id": customer.id,
            "valid_until": (utcnow() + timedelta(days=30)).isoformat(),
            "items": [{"name": "Audit", "quantity": 1, "unit_price": 500}],
        }, user=user)

        response = client.delete(f'/api/customers/{customer.id}', headers=user_headers)

        assert response.status_code == 400
        assert db.session.get(Customer, customer.id) is not None


class TestInteractions:

    def test_create_stamps_last_contact(self, client, user, user_headers, customer):
        response = create_interaction(client, user_headers, customer.id, type="MEETING")

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["user_id"] == user.id
        assert data["customer"]["id"] == customer.id
        assert customer.last_contact_at is not None

    def test_invalid_type(self, client, user_headers, customer):
        response = create_interaction(client, user_headers, customer.id, type="FAX")
        assert response.status_code == 400

    def test_unknown_customer(self, client, user_headers):
        response = create_interaction(client, user_headers, 424242)
        assert response.status_code == 404

    def test_customer_detail_lists_interactions(self, client, user_headers, customer):
        create_interaction(client, user_headers, customer.id, description="first")
        create_interaction(client, user_headers, customer.id, description="second")

        detail = client.get(f'/api/customers/{customer.id}', headers=user_headers).get_json()["data"]
        by_customer = client.get(f'/api/interactions/customer/{customer.id}', headers=user_headers).get_json()

        assert len(detail["interactions"]) == 2
        assert by_customer["count"] == 2

    def test_only_author_can_edit(self, client, user_headers, other_headers, customer):
        interaction_id = create_interaction(client, user_headers, customer.id).get_json()["data"]["id"]

        response = client.put(
            f'/api/interactions/{interaction_id}', headers=other_headers, json={"description": "hijacked"}
        )
        assert response.status_code == 403

        response = client.delete(f'/api/interactions/{interaction_id}', headers=other_headers)
        assert response.status_code == 403

        response = client.put(
            f'/api/interactions/{interaction_id}', headers=user_headers, json={"status": "PENDING"}
        )
        assert response.status_code == 200
        assert response.get_json()["data"]["status"] == "PENDING"

    def test_admin_can_delete(self, client, user_headers, admin_headers, customer):
        interaction_id = create_interaction(client, user_headers, customer.id).get_json()["data"]["id"]

        response = client.delete(f'/api/interactions/{interaction_id}', headers=admin_headers)

        assert response.status_code == 200
        assert db.session.get(Interaction, interaction_id) is None

    def test_todays_follow_ups(self, client, user_headers, customer):
        today = utcnow().replace(hour=23, minute=0, second=0, microsecond=0)
        create_interaction(client, user_headers, customer.id, next_follow_up=today.isoformat(), status="SCHEDULED")
        create_interaction(
            client, user_headers, customer.id,
            next_follow_up=(today + timedelta(days=2)).isoformat(), status="SCHEDULED",
        )
        create_interaction(client, user_headers, customer.id, next_follow_up=today.isoformat(), status="COMPLETED")

        body = client.get('/api/interactions/follow-ups', headers=user_headers).get_json()

        assert body["count"] == 1
