import models


def test_create_subscription(client, auth_headers, subscription_payload, test_user, db_session):
    response = client.post("/subscriptions", headers=auth_headers, json=subscription_payload())
    assert response.status_code == 200
    data = response.json()
    assert data["owner_id"] == test_user.id
    assert data["currency"] == "BRL"
    assert data["current_members"] == 1
    assert data["is_active"] is True
    assert data["last_password_change"] is None

    member = db_session.query(models.SubscriptionMember).one()
    assert member.user_id == test_user.id
    assert member.role == "admin"


def test_create_subscription_validation(client, auth_headers, subscription_payload):
    assert client.post("/subscriptions", headers=auth_headers, json=subscription_payload(total_price=0)).status_code == 422
    assert client.post("/subscriptions", headers=auth_headers, json=subscription_payload(max_members=0)).status_code == 422
    assert client.post("/subscriptions", headers=auth_headers, json=subscription_payload(currency="REAL")).status_code == 422


def test_create_subscription_in_group_requires_ownership(client, auth_headers, other_headers, subscription_payload):
    group = client.post("/groups", headers=auth_headers, json={"name": "Owners"}).json()

    response = client.post("/subscriptions", headers=other_headers, json=subscription_payload(group_id=group["id"]))
    assert response.status_code == 403

    response = client.post("/subscriptions", headers=auth_headers, json=subscription_payload(group_id=group["id"]))
    assert response.status_code == 200
    assert response.json()["group_id"] == group["id"]


def test_list_subscriptions_owned_and_joined(client, auth_headers, other_user, other_headers, subscription_payload):
    group = client.post("/groups", headers=auth_headers, json={"name": "Home"}).json()
    owned = client.post(
        "/subscriptions", headers=auth_headers, json=subscription_payload(total_price=1000, max_members=3, group_id=group["id"])
    ).json()
    client.post("/subscriptions", headers=other_headers, json=subscription_payload(name="Someone else's"))

    client.post(f"/subscriptions/{owned['id']}/members", headers=auth_headers, json={"user_id": other_user.id})

    mine = client.get("/subscriptions", headers=auth_headers).json()
    assert [s["id"] for s in mine] == [owned["id"]]
    assert mine[0]["role"] == "admin"
    assert mine[0]["group_name"] == "Home"
    # 1000 cents over 2 members
    assert mine[0]["your_share"] == 500

    theirs = client.get("/subscriptions", headers=other_headers).json()
    assert len(theirs) == 2
    joined = next(s for s in theirs if s["id"] == owned["id"])
    assert joined["role"] == "member"


def test_your_share_gives_remainder_to_earliest_members(client, auth_headers, other_user, other_headers, third_user, third_headers, subscription_payload):
    sub = client.post("/subscriptions", headers=auth_headers, json=subscription_payload(total_price=1000, max_members=3)).json()
    client.post(f"/subscriptions/{sub['id']}/members", headers=auth_headers, json={"user_id": other_user.id})
    client.post(f"/subscriptions/{sub['id']}/members", headers=auth_headers, json={"user_id": third_user.id})

    shares = [
        next(s for s in client.get("/subscriptions", headers=h).json() if s["id"] == sub["id"])["your_share"]
        for h in (auth_headers, other_headers, third_headers)
    ]
    assert shares == [334, 333, 333]
    assert sum(shares) == 1000


def test_get_subscription_hidden_from_outsiders(client, subscription, auth_headers, other_headers):
    assert client.get(f"/subscriptions/{subscription['id']}", headers=auth_headers).status_code == 200
    assert client.get(f"/subscriptions/{subscription['id']}", headers=other_headers).status_code == 404
    assert client.get("/subscriptions/999", headers=auth_headers).status_code == 404


def test_update_subscription_partial(client, subscription, auth_headers, other_headers):
    response = client.put(
        f"/subscriptions/{subscription['id']}", headers=auth_headers, json={"total_price": 6000}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total_price"] == 6000
    assert data["name"] == subscription["name"]

    response = client.put(f"/subscriptions/{subscription['id']}", headers=other_headers, json={"total_price": 1})
    assert response.status_code == 404


def test_update_cannot_shrink_below_members(client, subscription, auth_headers, other_user):
    client.post(f"/subscriptions/{subscription['id']}/members", headers=auth_headers, json={"user_id": other_user.id})
    response = client.put(f"/subscriptions/{subscription['id']}", headers=auth_headers, json={"max_members": 1})
    assert response.status_code == 400


def test_delete_subscription_removes_dependents(client, subscription, auth_headers, other_user, other_headers, db_session):
    sub_id = subscription["id"]
    client.post("/access-requests", headers=other_headers, json={"subscription_id": sub_id})
    client.post("/expenses", headers=auth_headers, json={
        "subscription_id": sub_id, "description": "Card fee", "amount": 300, "participants": [other_user.id]
    })
    client.post("/payments", headers=auth_headers, json={
        "subscription_id": sub_id, "amount": 1000, "type": "monthly",
        "billing_period_start": "2026-01-01T00:00:00", "billing_period_end": "2026-01-31T00:00:00"
    })

    assert client.delete(f"/subscriptions/{sub_id}", headers=other_headers).status_code == 404

    response = client.delete(f"/subscriptions/{sub_id}", headers=auth_headers)
    assert response.status_code == 200

    assert db_session.query(models.Subscription).count() == 0
    assert db_session.query(models.SubscriptionMember).count() == 0
    assert db_session.query(models.AccessRequest).count() == 0
    assert db_session.query(models.Payment).count() == 0
    assert db_session.query(models.Expense).count() == 0
    assert db_session.query(models.ExpenseParticipant).count() == 0
    assert db_session.query(models.Notification).count() == 0


def test_record_password_change(client, subscription, auth_headers, other_user, third_user, db_session):
    sub_id = subscription["id"]
    client.post(f"/subscriptions/{sub_id}/members", headers=auth_headers, json={"user_id": other_user.id})
    client.post(f"/subscriptions/{sub_id}/members", headers=auth_headers, json={"user_id": third_user.id})

    response = client.post(f"/subscriptions/{sub_id}/password-changed", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["members_notified"] == 2
    assert response.json()["last_password_change"] is not None

    notified = {
        n.user_id for n in db_session.query(models.Notification).filter(models.Notification.type == "password_updated")
    }
    assert notified == {other_user.id, third_user.id}

    audit = db_session.query(models.AuditLog).filter(models.AuditLog.action == "credential_updated").one()
    assert audit.severity == "high"
    assert audit.entity_id == sub_id


def test_record_password_change_requires_admin(client, subscription, auth_headers, other_user, other_headers):
    client.post(f"/subscriptions/{subscription['id']}/members", headers=auth_headers, json={"user_id": other_user.id})
    response = client.post(f"/subscriptions/{subscription['id']}/password-changed", headers=other_headers)
    assert response.status_code == 403


class TestPublicSubscriptions:
    def test_only_public_and_active(self, client, auth_headers, subscription_payload):
        public = client.post("/subscriptions", headers=auth_headers, json=subscription_payload()).json()
        client.post("/subscriptions", headers=auth_headers, json=subscription_payload(is_public=False))
        inactive = client.post("/subscriptions", headers=auth_headers, json=subscription_payload()).json()
        client.put(f"/subscriptions/{inactive['id']}", headers=auth_headers, json={"is_active": False})

        response = client.get("/subscriptions/public", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert [s["id"] for s in data["subscriptions"]] == [public["id"]]
        assert data["pagination"] == {"page": 1, "limit": 20, "total": 1, "total_pages": 1}

    def test_pricing_fields(self, client, auth_headers, subscription_payload):
        client.post("/subscriptions", headers=auth_headers, json=subscription_payload(total_price=1000, max_members=4))

        item = client.get("/subscriptions/public", headers=auth_headers).json()["subscriptions"][0]
        assert item["price_per_member"] == 250.0
        assert item["available_spots"] == 3
        assert item["percentage_filled"] == 25.0
        assert item["group"] is None

    def test_search_is_case_insensitive(self, client, auth_headers, subscription_payload):
        client.post("/subscriptions", headers=auth_headers, json=subscription_payload(name="Music", service_name="Spotify", description=None))
        client.post("/subscriptions", headers=auth_headers, json=subscription_payload(name="Movies", service_name="Netflix", description="4K screens"))

        names = lambda params: [s["name"] for s in client.get("/subscriptions/public", headers=auth_headers, params=params).json()["subscriptions"]]
        assert names({"search": "spoti"}) == ["Music"]
        assert names({"search": "4k"}) == ["Movies"]
        assert names({"service": "NETFLIX"}) == ["Movies"]

    def test_max_price_and_available_spots(self, client, auth_headers, subscription_payload):
        client.post("/subscriptions", headers=auth_headers, json=subscription_payload(name="Cheap", total_price=1000))
        client.post("/subscriptions", headers=auth_headers, json=subscription_payload(name="Pricey", total_price=9000))
        client.post("/subscriptions", headers=auth_headers, json=subscription_payload(name="Solo", total_price=500, max_members=1))

        names = lambda params: sorted(s["name"] for s in client.get("/subscriptions/public", headers=auth_headers, params=params).json()["subscriptions"])
        assert names({"max_price": 5000}) == ["Cheap", "Solo"]
        assert names({"available_spots": "true"}) == ["Cheap", "Pricey"]

    def test_pagination_newest_first(self, client, auth_headers, subscription_payload):
        ids = [
            client.post("/subscriptions", headers=auth_headers, json=subscription_payload(name=f"Sub {i}")).json()["id"]
            for i in range(5)
        ]

        page1 = client.get("/subscriptions/public", headers=auth_headers, params={"limit": 2}).json()
        page3 = client.get("/subscriptions/public", headers=auth_headers, params={"limit": 2, "page": 3}).json()

        assert page1["pagination"] == {"page": 1, "limit": 2, "total": 5, "total_pages": 3}
        assert [s["id"] for s in page1["subscriptions"]] == [ids[4], ids[3]]
        assert [s["id"] for s in page3["subscriptions"]] == [ids[0]]

    def test_invalid_paging(self, client, auth_headers):
        assert client.get("/subscriptions/public", headers=auth_headers, params={"page": 0}).status_code == 422
        assert client.get("/subscriptions/public", headers=auth_headers, params={"limit": 51}).status_code == 422

    def test_requires_authentication(self, client):
        assert client.get("/subscriptions/public").status_code == 401


def test_renewal_date_offset_stored_as_utc(client, auth_headers, subscription_payload):
    response = client.post(
        "/subscriptions", headers=auth_headers,
        json=subscription_payload(renewal_date="2030-01-10T21:00:00-03:00")
    )
    assert response.status_code == 200
    assert response.json()["renewal_date"] == "2030-01-11T00:00:00"

    updated = client.put(
        f"/subscriptions/{response.json()['id']}", headers=auth_headers,
        json={"renewal_date": "2030-02-01T12:00:00+02:00"}
    )
    assert updated.json()["renewal_date"] == "2030-02-01T10:00:00"
