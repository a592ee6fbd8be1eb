"""Hardware access: device registry, SCPI transactions and discovery."""
