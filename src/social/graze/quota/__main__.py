from social.graze.quota.app.cli import invoke

if __name__ == "__main__":
    invoke()
