from fitplan import create_app

# Entry point
app = create_app()

if __name__ == '__main__':
    app.run(debug=True, port=5000)
