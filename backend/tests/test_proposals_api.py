"""
Proposal API.

Verifies:
- PRO numbering and derived totals on create
- Status transitions through PUT
- ACCEPTED proposals convert to a DRAFT invoice exactly once
- Converted proposals cannot be edited or deleted
- PDF generation and e-mail delivery
"""

import os
from datetime import timedelta

import pytest

from crm.models import Invoice, Proposal
from crm.time_utils import utcnow


def proposal_payload(customer_id, **overrides):
    payload = {
        "customer_id": customer_id,
        "title": "Website redesign",
        "valid_until": (utcnow() + timedelta(days=30)).isoformat(),
        "discount": 0,
        "currency": "USD",
        "notes": "Phase one",
        "items": [
            {"name": "Design", "quantity": 1, "unit_price": 100, "tax_rate": 18, "discount": 0},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture(scope='function')
def proposal(client, user_headers, customer):
    response = client.post('/api/proposals', headers=user_headers, json=proposal_payload(customer.id))
    assert response.status_code == 201
    return response.get_json()["data"]


def set_status(client, headers, proposal_id, status):
    return client.put(f'/api/proposals/{proposal_id}', headers=headers, json={"status": status})


class TestCreateProposal:

    def test_create(self, proposal, user):
        assert proposal["number"].startswith("PRO-" + utcnow().strftime("%Y%m") + "-")
        assert proposal["status"] == "DRAFT"
        assert proposal["grand_total"] == 118.0
        assert proposal["tax_total"] == 18.0
        assert proposal["created_by_user_id"] == user.id
        assert [item["name"] for item in proposal["items"]] == ["Design"]

    def test_numbers_increment(self, client, user_headers, customer, proposal):
        second = client.post('/api/proposals', headers=user_headers, json=proposal_payload(customer.id))

        first_seq = int(proposal["number"].rsplit("-", 1)[1])
        second_seq = int(second.get_json()["data"]["number"].rsplit("-", 1)[1])
        assert second_seq == first_seq + 1

    def test_missing_valid_until(self, client, user_headers, customer):
        payload = proposal_payload(customer.id)
        del payload["valid_until"]

        response = client.post('/api/proposals', headers=user_headers, json=payload)
        assert response.status_code == 400

    def test_invalid_item(self, client, user_headers, customer):
        payload = proposal_payload(customer.id, items=[{"name": "Bad", "quantity": 0, "unit_price": 10}])

        response = client.post('/api/proposals', headers=user_headers, json=payload)
        assert response.status_code == 400

    def test_unknown_customer(self, client, user_headers):
        response = client.post('/api/proposals', headers=user_headers, json=proposal_payload(424242))
        assert response.status_code == 404

    def test_cannot_start_accepted(self, client, user_headers, customer):
        response = client.post('/api/proposals', headers=user_headers, json=proposal_payload(customer.id, status="ACCEPTED"))
        assert response.status_code == 400

    def test_replace_items(self, client, user_headers, proposal):
        response = client.put(f'/api/proposals/{proposal["id"]}', headers=user_headers, json={
            "discount": 10,
            "items": [
                {"name": "Design", "quantity": 2, "unit_price": 100, "tax_rate": 0},
                {"name": "Hosting", "quantity": 1, "unit_price": 50, "tax_rate": 0},
            ],
        })

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert len(data["items"]) == 2
        assert data["subtotal"] == 250.0
        assert data["grand_total"] == 225.0


class TestProposalStatus:

    def test_transitions(self, client, user_headers, proposal, db_session, customer):
        assert customer.last_contact_at is None
        assert set_status(client, user_headers, proposal["id"], "SENT").status_code == 200
        assert set_status(client, user_headers, proposal["id"], "NEGOTIATING").status_code == 200
        response = set_status(client, user_headers, proposal["id"], "ACCEPTED")

        assert response.status_code == 200
        assert response.get_json()["data"]["status"] == "ACCEPTED"
        db_session.refresh(customer)
        assert customer.last_contact_at is not None

    def test_draft_cannot_jump_to_accepted(self, client, user_headers, proposal):
        response = set_status(client, user_headers, proposal["id"], "ACCEPTED")

        assert response.status_code == 400
        assert client.get(f'/api/proposals/{proposal["id"]}', headers=user_headers).get_json()["data"]["status"] == "DRAFT"

    def test_rejected_is_terminal(self, client, user_headers, proposal):
        set_status(client, user_headers, proposal["id"], "SENT")
        set_status(client, user_headers, proposal["id"], "REJECTED")

        assert set_status(client, user_headers, proposal["id"], "SENT").status_code == 400

    def test_filter_by_status(self, client, user_headers, customer, proposal):
        client.post('/api/proposals', headers=user_headers, json=proposal_payload(customer.id))
        set_status(client, user_headers, proposal["id"], "SENT")

        body = client.get('/api/proposals?status=SENT', headers=user_headers).get_json()
        assert [p["id"] for p in body["data"]] == [proposal["id"]]


class TestConvertToInvoice:

    def _accept(self, client, headers, proposal_id):
        set_status(client, headers, proposal_id, "SENT")
        set_status(client, headers, proposal_id, "ACCEPTED")

    def test_convert(self, client, db_session, user_headers, proposal):
        self._accept(client, user_headers, proposal["id"])

        response = client.post(f'/api/proposals/{proposal["id"]}/convert-to-invoice', headers=user_headers, json={})

        assert response.status_code == 201
        invoice = response.get_json()["data"]
        assert invoice["number"].startswith("INV-")
        assert invoice["status"] == "DRAFT"
        assert invoice["proposal_id"] == proposal["id"]
        assert invoice["grand_total"] == proposal["grand_total"]
        assert invoice["currency"] == "USD"
        assert invoice["notes"] == "Phase one"
        assert [i["name"] for i in invoice["items"]] == ["Design"]

        stored = db_session.get(Proposal, proposal["id"])
        assert stored.converted_to_invoice is True
        assert stored.invoice_id == invoice["id"]

    def test_explicit_due_date(self, client, user_headers, proposal):
        self._accept(client, user_headers, proposal["id"])

        response = client.post(
            f'/api/proposals/{proposal["id"]}/convert-to-invoice',
            headers=user_headers,
            json={"due_date": "2030-01-31T00:00:00Z"},
        )
        assert response.get_json()["data"]["due_date"].startswith("2030-01-31")

    def test_converted_proposal_is_frozen(self, client, db_session, user_headers, proposal):
        self._accept(client, user_headers, proposal["id"])
        client.post(f'/api/proposals/{proposal["id"]}/convert-to-invoice', headers=user_headers)

        assert client.put(
            f'/api/proposals/{proposal["id"]}', headers=user_headers, json={"title": "Changed"}
        ).status_code == 400
        assert client.delete(f'/api/proposals/{proposal["id"]}', headers=user_headers).status_code == 400
        second = client.post(f'/api/proposals/{proposal["id"]}/convert-to-invoice', headers=user_headers)
        assert second.status_code == 400
        assert db_session.query(Invoice).count() == 1

    def test_only_accepted_converts(self, client, db_session, user_headers, proposal):
        response = client.post(f'/api/proposals/{proposal["id"]}/convert-to-invoice', headers=user_headers)

        assert response.status_code == 400
        assert db_session.query(Invoice).count() == 0


class TestProposalDocuments:

    def test_generate_pdf(self, client, user_headers, proposal):
        response = client.get(f'/api/proposals/{proposal["id"]}/generate-pdf', headers=user_headers)

        assert response.status_code == 200
        path = response.get_json()["data"]["pdf_path"]
        assert path.endswith(f'proposal-{proposal["number"]}.pdf')
        assert os.path.exists(path)
        with open(path, "rb") as fh:
            assert fh.read(4) == b"%PDF"

    def test_send_email_marks_sent(self, client, user_headers, proposal, customer, outbox):
        response = client.post(
            f'/api/proposals/{proposal["id"]}/send-email',
            headers=user_headers,
            json={"custom_message": "Looking forward to it"},
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["status"] == "SENT"
        assert len(outbox) == 1
        assert outbox[0].to == [customer.email]
        assert proposal["number"] in outbox[0].subject
        assert outbox[0].attachments[0].endswith(".pdf")

    def test_delete_draft(self, client, db_session, user_headers, proposal):
        response = client.delete(f'/api/proposals/{proposal["id"]}', headers=user_headers)

        assert response.status_code == 200
        assert db_session.get(Proposal, proposal["id"]) is None

    def test_stats(self, client, user_headers, proposal):
        set_status(client, user_headers, proposal["id"], "SENT")
        set_status(client, user_headers, proposal["id"], "ACCEPTED")

        data = client.get('/api/proposals/stats', headers=user_headers).get_json()["data"]

        assert data["by_status"]["ACCEPTED"] == 1
        assert data["acceptance_rate"] == 100.0
        assert data["total_amount"] == 118.0
