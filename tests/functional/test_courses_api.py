"""Course catalog, learning progress and admin course management."""

import io

from database import COURSES, USERS


class TestCatalog:
    def test_list_hides_video_urls(self, client, seed):
        seed.course()
        seed.course(title="Hidden Course", isActive=False)

        body = client.get("/api/courses").json()

        assert body["count"] == 1
        course = body["data"][0]
        assert course["slug"] == "python-basics"
        assert course["videoCount"] == 2
        assert all("url" not in video for video in course["videos"])

    def test_search_and_type_filters(self, client, seed):
        seed.course(title="Python Basics", type="pack")
        seed.course(title="Excel Tricks", type="single", videos=1)

        assert client.get("/api/courses", params={"search": "excel"}).json()["count"] == 1
        assert client.get("/api/courses", params={"type": "pack"}).json()["data"][0]["title"] == "Python Basics"
        assert client.get("/api/courses", params={"type": "bundle"}).status_code == 400

    def test_categories_are_distinct(self, client, seed):
        seed.course(title="One", category="Design")
        seed.course(title="Two", category="Design")
        seed.course(title="Three", category="Data Science")

        data = client.get("/api/courses/categories").json()["data"]

        assert [c["slug"] for c in data] == ["data-science", "design"]


class TestLearning:
    def test_course_requires_active_entitlement(self, client, seed, user_headers):
        course = seed.course()
        stranger = seed.user(email="stranger@example.com")
        lapsed = seed.user(email="lapsed@example.com", expired=[course])

        assert client.get("/api/courses/python-basics", headers=user_headers(stranger)).status_code == 403
        assert client.get("/api/courses/python-basics", headers=user_headers(lapsed)).status_code == 403
        assert client.get("/api/courses/missing", headers=user_headers(stranger)).status_code == 404

    def test_owner_sees_videos(self, client, seed, user_headers):
        course = seed.course()
        user = seed.user(courses=[course])

        data = client.get("/api/courses/python-basics", headers=user_headers(user)).json()["data"]

        assert [v["url"] for v in data["videos"]] == [v["url"] for v in course["videos"]]
        assert data["progress"]["percentage"] == 0

    def test_progress_percentage(self, client, seed, user_headers):
        course = seed.course(videos=3)
        user = seed.user(courses=[course])
        headers = user_headers(user)
        first = str(course["videos"][0]["_id"])

        response = client.put("/api/courses/python-basics/progress", headers=headers, json={"videoId": first})

        assert response.status_code == 200
        assert response.json()["data"] == {"progressPercentage": 33, "completedVideos": 1, "totalVideos": 3}

        second = str(course["videos"][1]["_id"])
        client.put("/api/courses/python-basics/progress", headers=headers, json={"videoId": second})
        stored = seed.get(USERS, user["_id"])
        assert stored["courseProgress"][0]["progressPercentage"] == 67
        assert stored["courseProgress"][0]["lastWatchedVideo"] == second

        undo = client.put(
            "/api/courses/python-basics/progress", headers=headers, json={"videoId": second, "isCompleted": False}
        )
        assert undo.json()["data"]["progressPercentage"] == 33

    def test_progress_unknown_video(self, client, seed, user_headers):
        course = seed.course()
        user = seed.user(courses=[course])

        response = client.put(
            "/api/courses/python-basics/progress", headers=user_headers(user), json={"videoId": "nope"}
        )

        assert response.status_code == 404
        assert response.json()["error"] == "Video not found"

    def test_my_courses_skips_expired(self, client, seed, user_headers):
        active = seed.course(title="Active Course")
        lapsed = seed.course(title="Lapsed Course")
        user = seed.user(courses=[active], expired=[lapsed])

        body = client.get("/api/courses/my-courses", headers=user_headers(user)).json()

        assert body["count"] == 1
        assert body["data"][0]["slug"] == "active-course"
        assert body["data"][0]["expiresAt"]


class TestAdminCourses:
    def test_user_token_is_not_admin(self, client, seed, user_headers):
        user = seed.user()
        response = client.get("/api/admin/courses", headers=user_headers(user))

        assert response.status_code == 403

    def test_create_course_with_thumbnail(self, client, seed, admin_headers, storage):
        admin = seed.admin()
        form = {"title": "Data Analysis", "description": "Pandas from scratch", "type": "pack", "price": "250000"}

        response = client.post(
            "/api/admin/courses",
            headers=admin_headers(admin),
            data=form,
            files={"thumbnail": ("cover.jpg", io.BytesIO(b"jpeg"), "image/jpeg")},
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["slug"] == "data-analysis"
        assert data["studentsEnrolled"] == 0
        assert data["accessDurationMonths"] == 12
        assert data["thumbnail"] in storage.files

        duplicate = client.post("/api/admin/courses", headers=admin_headers(admin), data=form)
        assert duplicate.status_code == 409

    def test_single_course_embeds_video(self, client, seed, admin_headers):
        admin = seed.admin()
        response = client.post(
            "/api/admin/courses",
            headers=admin_headers(admin),
            data={"title": "Quick Tip", "description": "One video", "type": "single",
                  "videoUrl": "https://youtu.be/abc", "videoDuration": "5:00"},
        )

        videos = response.json()["data"]["videos"]
        assert [(v["title"], v["url"], v["order"]) for v in videos] == [("Quick Tip", "https://youtu.be/abc", 0)]

    def test_delete_strips_course_from_users(self, client, seed, admin_headers, storage):
        admin = seed.admin()
        course = seed.course()
        other = seed.course(title="Go Basics")
        holder = seed.user(email="one@example.com", courses=[course, other])
        seed.user(email="two@example.com", courses=[course])

        response = client.delete(f"/api/admin/courses/{course['_id']}", headers=admin_headers(admin))

        assert response.status_code == 200
        assert response.json()["data"] == {"usersAffected": 2}
        assert seed.get(COURSES, course["_id"]) is None
        stored = seed.get(USERS, holder["_id"])
        assert [e["course"] for e in stored["purchasedCourses"]] == [other["_id"]]
        assert course["thumbnail"] in storage.deleted

    def test_delete_succeeds_when_media_cleanup_fails(self, client, seed, admin_headers, storage):
        admin = seed.admin()
        course = seed.course()
        holder = seed.user(courses=[course])
        storage.fail_deletes = True

        response = client.delete(f"/api/admin/courses/{course['_id']}", headers=admin_headers(admin))

        assert response.status_code == 200
        assert response.json()["data"] == {"usersAffected": 1}
        assert seed.get(COURSES, course["_id"]) is None
        assert seed.get(USERS, holder["_id"])["purchasedCourses"] == []

    def test_company_admin_scope(self, client, seed, admin_headers):
        acme = seed.company()
        globex = seed.company(name="Globex")
        seed.course(title="Acme Course", company=acme)
        foreign = seed.course(title="Globex Course", company=globex)
        admin = seed.admin(email="acme-admin@example.com", role="company", company=acme)
        headers = admin_headers(admin)

        listed = client.get("/api/admin/courses", headers=headers).json()["data"]
        assert [c["title"] for c in listed] == ["Acme Course"]
        assert client.get(f"/api/admin/courses/{foreign['_id']}", headers=headers).status_code == 403
        assert client.delete(f"/api/admin/courses/{foreign['_id']}", headers=headers).status_code == 403

        created = client.post(
            "/api/admin/courses", headers=headers, data={"title": "New Acme", "description": "d", "companyId": str(globex["_id"])}
        )
        assert created.json()["data"]["companyId"] == str(acme["_id"])

    def test_pack_video_management(self, client, seed, admin_headers, storage):
        admin = seed.admin()
        course = seed.course(videos=1)
        headers = admin_headers(admin)
        base = f"/api/admin/courses/{course['_id']}"

        added = client.post(
            f"{base}/videos",
            headers=headers,
            data={"title": "Uploaded"},
            files={"video": ("lesson.mp4", io.BytesIO(b"mp4"), "video/mp4")},
        )
        assert added.status_code == 201
        videos = added.json()["data"]["videos"]
        assert len(videos) == 2
        assert videos[1]["url"] in storage.files

        first, second = videos[0]["id"], videos[1]["id"]
        reordered = client.put(
            f"{base}/videos-order",
            headers=headers,
            json={"videoOrders": [{"videoId": first, "order": 1}, {"videoId": second, "order": 0}]},
        )
        assert [v["id"] for v in reordered.json()["data"]["videos"]] == [second, first]

        renamed = client.put(f"{base}/videos/{first}", headers=headers, json={"title": "Intro"})
        assert any(v["title"] == "Intro" for v in renamed.json()["data"]["videos"])

        removed = client.delete(f"{base}/videos/{second}", headers=headers)
        remaining = removed.json()["data"]["videos"]
        assert [(v["id"], v["order"]) for v in remaining] == [(first, 0)]
        assert videos[1]["url"] in storage.deleted

    def test_videos_only_added_to_packs(self, client, seed, admin_headers):
        admin = seed.admin()
        course = seed.course(title="Single One", type="single", videos=1)

        response = client.post(
            f"/api/admin/courses/{course['_id']}/videos", headers=admin_headers(admin), data={"url": "https://x/y.mp4"}
        )

        assert response.status_code == 400
