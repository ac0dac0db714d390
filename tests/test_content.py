from core import events

from conftest import auth_headers

STORY = "The mock interview showed me exactly where I was rambling."


def test_testimonial_is_public_only_after_approval(client, admin_headers):
    user = auth_headers("cadet-1", name="Kiran")
    resp = client.post("/testimonials", json={"story": STORY, "service_taken": "SSB Mock Interview"}, headers=user)
    assert resp.status_code == 201
    testimonial_id = resp.get_json()["id"]
    assert client.get("/testimonials").get_json() == []

    pending = client.get("/admin/testimonials?status=pending", headers=admin_headers).get_json()
    assert [t["id"] for t in pending] == [testimonial_id]

    resp = client.post(f"/admin/testimonials/{testimonial_id}/status", json={"status": "approved"}, headers=admin_headers)
    assert resp.status_code == 200

    public = client.get("/testimonials").get_json()
    assert [(t["id"], t["name"]) for t in public] == [(testimonial_id, "Kiran")]


def test_short_testimonial_rejected(client):
    resp = client.post("/testimonials", json={"story": "Great!", "service_taken": "x"}, headers=auth_headers("cadet-1"))
    assert resp.status_code == 400


def test_blog_drafts_stay_hidden_until_published(client, admin_headers):
    resp = client.post("/admin/blog", json={"title": "Cracking the SSB Interview", "body": "Start with your PIQ."}, headers=admin_headers)
    assert resp.status_code == 201
    post = resp.get_json()
    assert post["slug"] == "cracking-the-ssb-interview"
    assert client.get("/blog").get_json() == []
    assert client.get(f"/blog/{post['slug']}").status_code == 404

    resp = client.put(f"/admin/blog/{post['id']}", json={"is_published": True}, headers=admin_headers)
    assert resp.get_json()["published_at"] is not None

    listed = client.get("/blog").get_json()
    assert [p["slug"] for p in listed] == [post["slug"]]
    assert "body" not in listed[0]
    assert client.get(f"/blog/{post['slug']}").get_json()["body"] == "Start with your PIQ."

    dup = client.post("/admin/blog", json={"title": "Cracking the SSB interview!", "body": "again"}, headers=admin_headers)
    assert dup.status_code == 409


def test_resources_carry_only_their_kind_fields(client, admin_headers):
    video = client.post("/admin/resources", json={
        "kind": "video", "title": "Lecturette basics", "service_category": "ssb",
        "url": "https://videos.example.com/1", "duration_minutes": 12, "file_format": "pdf",
    }, headers=admin_headers)
    assert video.status_code == 201
    assert video.get_json()["duration_minutes"] == 12
    assert "file_format" not in video.get_json()

    doc = client.post("/admin/resources", json={
        "kind": "document", "title": "PIQ form guide", "service_category": "ssb",
        "url": "https://docs.example.com/piq.pdf", "file_format": "PDF",
    }, headers=admin_headers)
    assert doc.get_json()["file_format"] == "pdf"
    assert "duration_minutes" not in doc.get_json()

    listed = client.get("/resources?category=ssb", headers=auth_headers("cadet-1")).get_json()
    assert {r["kind"] for r in listed} == {"video", "document"}
    assert client.get("/resources?category=afcat", headers=auth_headers("cadet-1")).get_json() == []


def test_resource_variants_are_validated(client, admin_headers):
    base = {"title": "Something", "service_category": "ssb", "url": "https://example.com/x"}
    assert client.post("/admin/resources", json=dict(base, kind="podcast"), headers=admin_headers).status_code == 400
    assert client.post("/admin/resources", json=dict(base, kind="video"), headers=admin_headers).status_code == 400
    assert client.post("/admin/resources", json=dict(base, kind="document"), headers=admin_headers).status_code == 400
    assert client.post("/admin/resources", json=dict(base, kind="link", url="ftp://x"), headers=admin_headers).status_code == 400
    assert client.post("/admin/resources", json=dict(base, kind="link"), headers=admin_headers).status_code == 201


def test_resources_need_sign_in(client):
    assert client.get("/resources").status_code == 401


def test_message_thread_with_admin_reply(client, admin_headers):
    user = auth_headers("cadet-1")
    resp = client.post("/messages", json={"subject": "Rescheduling", "body": "Can I move my session?"}, headers=user)
    assert resp.status_code == 201
    message_id = resp.get_json()["id"]

    inbox = client.get("/admin/messages?status=new", headers=admin_headers).get_json()
    assert [m["id"] for m in inbox] == [message_id]

    resp = client.post(f"/admin/messages/{message_id}/reply", json={"body": "Yes, pick a new slot."}, headers=admin_headers)
    assert resp.status_code == 201
    assert resp.get_json()["subject"] == "Re: Rescheduling"

    thread = client.get("/messages/me", headers=user).get_json()
    assert [(m["sender_type"], m["status"]) for m in thread] == [("user", "replied"), ("admin", "new")]
    assert thread[1]["parent_id"] == message_id

    resp = client.post(f"/admin/messages/{message_id}/status", json={"status": "closed"}, headers=admin_headers)
    assert resp.get_json()["status"] == "closed"
    assert client.post(f"/admin/messages/{message_id}/status", json={"status": "archived"}, headers=admin_headers).status_code == 400


def test_admin_reply_notifies_the_user(client, admin_headers):
    user = auth_headers("cadet-1")
    message_id = client.post("/messages", json={"subject": "Rescheduling", "body": "Can I move my session?"}, headers=user).get_json()["id"]

    client.post(f"/admin/messages/{message_id}/reply", json={"body": "Yes, pick a new slot."}, headers=admin_headers)

    feed = client.get("/me/notifications?unseen=1", headers=user).get_json()
    assert [(n["type"], n["message"], n["booking_id"]) for n in feed] == [
        ("message.replied", 'Admin replied in: "Rescheduling"', None),
    ]
    assert client.get("/me/notifications", headers=auth_headers("cadet-2")).get_json() == []


def test_reply_notice_shortens_long_subjects():
    assert events.reply_notice("Re: Preparing for the SSB interview round") == 'Admin replied in: "Preparing for the SSB int..."'
    assert events.reply_notice("Fees") == 'Admin replied in: "Fees"'


def test_non_string_fields_are_rejected(client):
    resp = client.post("/messages", json={"subject": 12, "body": "Hello there"}, headers=auth_headers("cadet-1"))
    assert resp.status_code == 400
    assert "subject" in resp.get_json()["details"]
