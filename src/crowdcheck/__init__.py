"""CrowdCheck — answer quality pipeline for crowdsourced data."""
