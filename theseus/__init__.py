"""
Theseus - container deployment tracker

Responsibilities:
- Entity store for containers, host machines, users, teams, organizations
- Deploy containers on the Docker runtime, then record them
- Find running containers that were never recorded
- Compose files for webtop containers
- JSON API over all of the above
"""
