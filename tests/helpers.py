def login(client, email: str, password: str = "password123", *, follow_redirects: bool = False):
    return client.post(
        "/login",
        data={"email": email, "password": password},
        follow_redirects=follow_redirects,
    )
