"""Tea-shop storefront service: catalog, checkout and admin console API."""
