"""Domain exception taxonomy shared by services and blueprints."""
